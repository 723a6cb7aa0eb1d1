"""
Federated chat server.

A single chat server keeps users, conversations and message chains in
memory, writes them through to SQLite, serves clients over HTTP and
exchanges new messages with peer servers through a shared relay.

Modules:
- common: identifiers and entity records
- store: ordered indices and multi-index entity tables
- model, controller, view: state, creation path and queries
- scheduler: the Timeline task runner
- relay, sync: relay clients and the poll/push synchronizer
- persistence: write-through sinks
- api: client request protocol and HTTP front end
"""

__version__ = "0.1.0"
