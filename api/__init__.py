"""HTTP surface of the chat fallback proxy."""
