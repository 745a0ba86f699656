"""Release of IP reservations held by pods that no longer exist."""