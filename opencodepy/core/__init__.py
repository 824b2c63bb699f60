"""Client facade, domain types, events and the streaming machinery."""
