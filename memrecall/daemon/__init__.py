"""Search daemon for memrecall."""
