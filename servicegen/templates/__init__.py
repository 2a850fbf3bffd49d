"""Text templates used by the code generators."""
