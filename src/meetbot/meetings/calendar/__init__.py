"""Calendar discovery -- turns upcoming Google Calendar events into Meeting rows."""
