# Conversation memory for the intent service

# +---------------------+
# |    SessionStore     |   (Durable, shared, TTL per session)
# |---------------------|
# | session:<id> JSON   |
# | messages, metadata  |
# +---------------------+
#          ^
#          | load / save_message
#          |
# +------------------------------+
# |  ConversationMemoryManager   |   (Single entry point)
# |------------------------------|
# | per-session append lock      |
# | history formatting           |
# +------------------------------+
#          |
#          | get / set (LRU)
#          v
# +---------------------+
# |    SessionCache     |   (Process-local projection)
# |---------------------|
# | role + content only |
# +---------------------+
