"""Services package for the progression engine and its scheduled sweep."""
