"""Meeting bot engine -- discovery, bot lifecycle, completion and insights.

Calendar events become Meeting rows; a bot is deployed shortly before
each meeting starts; vendor status is reconciled from webhooks and a
background poller; finished meetings are transcribed, and insights are
extracted and stored.
"""
