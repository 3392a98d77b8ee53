"""External collaborators: language model completion and prompt assembly."""
