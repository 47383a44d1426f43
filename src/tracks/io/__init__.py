"""Wire encoding and network transport."""
