"""
Services: collaborators the pipeline talks to (session storage, menus, orders).
"""
