"""CRM Service Module.

Provides the multi-channel conversation core:
- Inbox: conversation list assembly, previews, filters, assignment,
  unread tracking, message lifecycle and real-time notification
- Contacts: find-or-create, advisory duplicate detection, delete guard

Submodule Structure:
    crm/
    ├── inbox/       - Conversation list and message lifecycle
    └── contacts/    - Contact resolution and duplicate detection
"""
