"""Work order lifecycle and parts reservation backend."""
