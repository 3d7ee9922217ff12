"""Pure domain layer: vocabularies, rule table, tracking descriptors, clock."""
