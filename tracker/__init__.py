# Totem Tracker service
