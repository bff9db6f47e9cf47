"""Command-line sub-applications for Productflow."""
