"""Row store writes."""
