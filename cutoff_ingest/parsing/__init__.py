"""Input-side parsing: files, filenames, rank strings, and field helpers."""
