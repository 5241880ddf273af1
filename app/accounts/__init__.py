"""
Accounts app.

Slim user model for the settlement engine. Identity beyond email login
and a marketplace role (homeowner, cleaner, business owner, staff) is
owned by the external authentication service.

Related apps:
    - appeals: Appeal.appealer / assigned_to / reviewed_by reference User
    - settlements: Actors are resolved from the request user
"""
