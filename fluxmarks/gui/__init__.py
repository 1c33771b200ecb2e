"""ttkbootstrap side panel."""
