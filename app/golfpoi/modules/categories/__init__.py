"""
Categories module (admin-only management).

- A category groups courses by province and lists the province's valid counties.
- Courses bind to a category by province string; categories are created and
  deleted, never edited in place.
"""
