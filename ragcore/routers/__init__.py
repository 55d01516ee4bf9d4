"""HTTP routers the host application can mount."""
