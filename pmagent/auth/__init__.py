"""Request gate: admin session cookies and fixed-window rate limiting."""
