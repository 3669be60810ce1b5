"""Language Server Protocol shell."""
