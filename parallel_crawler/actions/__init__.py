"""Built-in crawl actions resolvable by the script action engine."""
