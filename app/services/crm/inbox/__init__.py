"""CRM Inbox submodule.

Submodules:
- listing: conversation list and search assembly (the query service)
- filters: filter compiler for list requests
- previews: batched last-message previews
- conversation_actions: assignment, status and priority changes
- unread: unread counter maintenance
- messages: message creation, deletion and outbound send
- inbound: normalized inbound event ingestion
- notifications: post-commit real-time notification outbox
- providers: outbound provider adapters (Z-API)
- cache: injectable TTL cache for list pages
- errors: error taxonomy
- permissions: permission evaluator contract
"""
