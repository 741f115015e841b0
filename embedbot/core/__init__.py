"""Bot layer: Discord client, bootstrap helpers and the chat adapter."""
