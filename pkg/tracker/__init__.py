# Task tracker: task and category storage plus the view filters
#
# Components:
#   schema.py     - Data model (Task, Category, status tags, timestamp codec)
#   errors.py     - NotFound, StorageUnavailable, ValidationSkipped
#   store.py      - SQLite persistence layer
#   json_store.py - Flat-file JSON persistence layer (same interface)
#   query.py      - Status classes and the search filter shared by all views
#   config.py     - YAML/env configuration and backend selection
