"""Background dispatch loops and their scheduling rules."""
