"""
Role-filtered navigation menu, computed on every request.
"""

from .models import MenuItem


def build_menu(user):
    """
    Build the menu tree visible to ``user``.

    Entries the user may not see are dropped together with their children.

    Returns:
        list: Nested dicts with ``id``, ``title``, ``path``, ``icon`` and
        ``children`` keys, ordered by ``order``.
    """
    items = [item for item in MenuItem.objects.all() if item.is_visible_to(user)]
    visible_ids = {item.pk for item in items}

    nodes = {
        item.pk: {
            'id': item.pk,
            'title': item.title,
            'path': item.path,
            'icon': item.icon,
            'children': [],
        }
        for item in items
    }

    tree = []
    for item in items:
        node = nodes[item.pk]
        if item.parent_id is None:
            tree.append(node)
        elif item.parent_id in visible_ids:
            nodes[item.parent_id]['children'].append(node)
    return tree
