"""Domain services: review workflow, exports, file storage and automation."""
