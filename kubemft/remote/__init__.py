"""Remote registry access: credential lookup and the HTTP transport target."""
