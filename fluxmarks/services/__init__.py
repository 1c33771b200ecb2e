"""Services: mutations, synchronization, opening and search."""
