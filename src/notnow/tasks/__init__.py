"""
Task database.

Components:
- tags.py: task ids and the session tag registry
- task_models.py: data structures (Task, TagLit, Polarity)
- ordering.py: linked per-view task order
- views.py: tag-literal views and membership recomputation
- task_state.py: in-memory database with dirty bookkeeping
- undo.py: reversible operations and the undo/redo log
- ical.py / meta.py: on-disk record codecs
- locks.py: cross-process instance lock
- task_store.py: file-backed store tying everything together
"""
