"""Vouch / carry request bot: ticket, helper reputation and free carry quota storage."""
