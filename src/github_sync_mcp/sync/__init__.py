"""Three-way vault sync against a GitHub branch.

Every tracked path is compared across the remote manifest, the local
manifest and the file actually on disk.  Changes are pushed as a single
commit built with the Git Data API; the manifest travels in the same
commit so any clone of the branch carries the sync state.

Modules:

- ``models``    -- ``FileMetadata``, ``Metadata``, tree items, actions,
  conflicts and reports: the data contracts.
- ``state``     -- ``MetadataStore``: load/save the manifest with FIFO,
  atomic writes.
- ``listener``  -- ``ChangeListener``: local events to dirty flags and
  tombstones.
- ``watcher``   -- ``VaultWatcher``: watchdog observer feeding the listener.
- ``blobs``     -- git blob hashing and text/binary probing.
- ``engine``    -- ``SyncEngine``: first sync, reconciliation, commit.
- ``resolver``  -- conflict policies (ask, overwriteLocal, overwriteRemote).
- ``channel``   -- ``ConflictChannel``: the ask policy's request/response.
- ``scheduler`` -- ``SyncScheduler``: interval and startup syncs.
- ``reporter``  -- human-readable and JSON report formatting.

Import the modules directly, e.g.
``from github_sync_mcp.sync.engine import SyncEngine``.
"""
