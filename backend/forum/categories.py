"""
Category Tree Store
===================

Hierarchical taxonomy backed by a closure table.

CLOSURE TABLE LAYOUT:
---------------------
For the tree  A -> B -> C  the rows are:

    (A, A, 0) (B, B, 0) (C, C, 0)
    (A, B, 1) (B, C, 1)
    (A, C, 2)

- Descendants of X:  SELECT descendant WHERE ancestor = X
- Ancestors of X:    SELECT ancestor WHERE descendant = X
Both are a single indexed query, regardless of depth.

MAINTENANCE:
------------
- insert: self row + (every ancestor of parent, depth + 1)
- move:   drop paths from old ancestors into the subtree,
          add (new ancestors x subtree) with summed depths
- delete: drop paths from the node's ancestors into its subtree;
          the node's own rows cascade. Children become roots.

REMOVAL POLICY:
---------------
Removing a category detaches its children (parent -> NULL) and
cascade-deletes the category's own threads (with posts, votes, comments).
"""

import logging
from typing import Optional

from django.db import transaction, IntegrityError
from django.utils.text import slugify

from .exceptions import NotFound, Conflict, InvalidOperation
from .models import (
    Category,
    CategoryClosure,
    Role,
    CATEGORY_SLUG_MAX_LENGTH,
)
from .queries import build_category_tree

logger = logging.getLogger(__name__)

_UNSET = object()


def make_slug(text: str, max_length: int) -> str:
    """Deterministic slug; rejects text that slugifies to nothing."""
    slug = slugify(text or '')[:max_length].strip('-')
    if not slug:
        raise InvalidOperation('Name must contain at least one letter or digit.')
    return slug


def _get_category(category_id) -> Category:
    category = Category.objects.filter(pk=category_id).first()
    if category is None:
        logger.warning(f"Category not found: {category_id}")
        raise NotFound(f"Category with ID {category_id} not found")
    return category


def _ensure_slug_free(slug: str, exclude_pk=None) -> None:
    qs = Category.objects.filter(slug=slug)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    if qs.exists():
        raise Conflict('Category name or slug already exists.')


def _insert_closure_rows(category: Category, parent: Optional[Category]) -> None:
    rows = [CategoryClosure(ancestor=category, descendant=category, depth=0)]
    if parent is not None:
        for ancestor_id, depth in (
            CategoryClosure.objects
            .filter(descendant=parent)
            .values_list('ancestor_id', 'depth')
        ):
            rows.append(CategoryClosure(
                ancestor_id=ancestor_id,
                descendant=category,
                depth=depth + 1
            ))
    CategoryClosure.objects.bulk_create(rows)


def create_category(
    name: str,
    parent_id=None,
    *,
    description: str = '',
    icon_url: str = '',
    display_order: int = 0,
    min_view_role: str = Role.GUEST,
    min_thread_role: str = Role.USER,
    min_post_role: str = Role.USER,
) -> Category:
    """
    Create a category, optionally under a parent.

    RAISES:
    - NotFound: parent_id given but missing
    - Conflict: slug already taken
    """
    slug = make_slug(name, CATEGORY_SLUG_MAX_LENGTH)

    with transaction.atomic():
        parent = None
        if parent_id is not None:
            parent = Category.objects.filter(pk=parent_id).first()
            if parent is None:
                logger.warning(f"Parent category with ID {parent_id} not found.")
                raise NotFound(f"Parent category with ID {parent_id} not found")

        _ensure_slug_free(slug)

        try:
            with transaction.atomic():
                category = Category.objects.create(
                    name=name,
                    slug=slug,
                    parent=parent,
                    description=description,
                    icon_url=icon_url,
                    display_order=display_order,
                    min_view_role=Role(min_view_role),
                    min_thread_role=Role(min_thread_role),
                    min_post_role=Role(min_post_role),
                )
        except IntegrityError:
            # Concurrent create with the same slug
            logger.warning(f"Slug collision while creating category '{name}'")
            raise Conflict('Category name or slug already exists.')

        _insert_closure_rows(category, parent)

    logger.info(f"Category created successfully with ID: {category.pk}")
    return category


def find_tree() -> list[dict]:
    """
    The full forest as nested dicts:

        [{'category': Category, 'children': [...]}, ...]

    Query: 1. Ordered by display_order, then name, on every level.
    """
    categories = list(Category.objects.order_by('display_order', 'name', 'pk'))
    return build_category_tree(categories)


def find_category(id_or_slug) -> Category:
    """
    Single category by primary key or slug.

    Strings are tried as a slug first; digit-only strings fall back to the
    primary key (a category may legitimately be called "2024").
    """
    category = None
    if isinstance(id_or_slug, int):
        category = Category.objects.filter(pk=id_or_slug).first()
    else:
        value = str(id_or_slug)
        category = Category.objects.filter(slug=value).first()
        if category is None and value.isdigit():
            category = Category.objects.filter(pk=int(value)).first()

    if category is None:
        logger.warning(f"Category not found: {id_or_slug}")
        raise NotFound(f"Category with identifier {id_or_slug} not found")
    return category


def descendant_ids(category, include_self: bool = False) -> set:
    qs = CategoryClosure.objects.filter(ancestor=category)
    if not include_self:
        qs = qs.filter(depth__gt=0)
    return set(qs.values_list('descendant_id', flat=True))


def find_descendants(category: Category) -> list[Category]:
    """All strict descendants, nearest first."""
    return list(
        Category.objects
        .filter(ancestor_links__ancestor=category, ancestor_links__depth__gt=0)
        .order_by('ancestor_links__depth', 'display_order', 'name')
    )


def find_ancestors(category: Category) -> list[Category]:
    """All strict ancestors, root first."""
    return list(
        Category.objects
        .filter(descendant_links__descendant=category, descendant_links__depth__gt=0)
        .order_by('-descendant_links__depth')
    )


def find_descendants_tree(category: Category) -> dict:
    """The category and its whole subtree as a nested dict."""
    subtree = list(
        Category.objects
        .filter(ancestor_links__ancestor=category)
        .order_by('display_order', 'name', 'pk')
    )
    for node in build_category_tree(subtree):
        if node['category'].pk == category.pk:
            return node
    return {'category': category, 'children': []}


def _lock_ancestor_chains(*category_ids) -> set:
    """
    Lock the given categories and all of their ancestors, in pk order.

    Two moves that could close a cycle between them always share a locked
    row: the one moving X under P locks P's chain, which contains any
    category Y whose concurrent move would put X below P. The chains are
    re-read after locking, since a move that committed while we waited
    may have extended them.

    RETURNS: ids of the locked rows
    """
    ids = [pk for pk in category_ids if pk is not None]
    locked = set()
    while True:
        chain = set(
            Category.objects
            .filter(descendant_links__descendant_id__in=ids)
            .values_list('pk', flat=True)
        )
        if chain <= locked:
            return locked
        list(Category.objects.select_for_update().filter(pk__in=chain).order_by('pk'))
        locked |= chain


def move_category(category_id, new_parent_id) -> Category:
    """
    Re-parent a category (None makes it a root).

    RAISES:
    - NotFound: category or new parent missing
    - InvalidOperation: new parent is the category itself or one of its
      descendants (would create a cycle)
    """
    with transaction.atomic():
        _lock_ancestor_chains(category_id, new_parent_id)

        category = _get_category(category_id)
        new_parent = None

        if new_parent_id is not None:
            if str(new_parent_id) == str(category.pk):
                raise InvalidOperation('A category cannot be its own parent.')
            new_parent = Category.objects.filter(pk=new_parent_id).first()
            if new_parent is None:
                raise NotFound(f"New parent category with ID {new_parent_id} not found")
            if new_parent.pk in descendant_ids(category):
                raise InvalidOperation('Cannot move category under one of its own descendants.')

        if category.parent_id == (new_parent.pk if new_parent else None):
            return category

        subtree = list(
            CategoryClosure.objects
            .filter(ancestor=category)
            .values_list('descendant_id', 'depth')
        )
        subtree_ids = [node_id for node_id, _ in subtree]

        old_ancestor_ids = list(
            CategoryClosure.objects
            .filter(descendant=category, depth__gt=0)
            .values_list('ancestor_id', flat=True)
        )
        CategoryClosure.objects.filter(
            ancestor_id__in=old_ancestor_ids,
            descendant_id__in=subtree_ids
        ).delete()

        if new_parent is not None:
            new_ancestors = list(
                CategoryClosure.objects
                .filter(descendant=new_parent)
                .values_list('ancestor_id', 'depth')
            )
            CategoryClosure.objects.bulk_create([
                CategoryClosure(
                    ancestor_id=ancestor_id,
                    descendant_id=node_id,
                    depth=ancestor_depth + node_depth + 1
                )
                for ancestor_id, ancestor_depth in new_ancestors
                for node_id, node_depth in subtree
            ])

        category.parent = new_parent
        category.save(update_fields=['parent', 'updated_at'])

    logger.info(
        f"Category {category.pk} moved under "
        f"{new_parent.pk if new_parent else 'root'}"
    )
    return category


def update_category(
    category_id,
    *,
    name=None,
    description=None,
    icon_url=None,
    display_order=None,
    min_view_role=None,
    min_thread_role=None,
    min_post_role=None,
    parent_id=_UNSET,
) -> Category:
    """
    Update mutable fields. parent_id (including None) is delegated to
    move_category.

    Only the touched columns are written: thread_count/post_count are owned
    by counters.py and must never be overwritten from a stale instance.
    """
    with transaction.atomic():
        category = _get_category(category_id)
        fields = []

        if name is not None and name != category.name:
            slug = make_slug(name, CATEGORY_SLUG_MAX_LENGTH)
            _ensure_slug_free(slug, exclude_pk=category.pk)
            category.name = name
            category.slug = slug
            fields += ['name', 'slug']

        for field, value in (
            ('description', description),
            ('icon_url', icon_url),
            ('display_order', display_order),
        ):
            if value is not None:
                setattr(category, field, value)
                fields.append(field)

        for field, value in (
            ('min_view_role', min_view_role),
            ('min_thread_role', min_thread_role),
            ('min_post_role', min_post_role),
        ):
            if value is not None:
                setattr(category, field, Role(value))
                fields.append(field)

        if fields:
            try:
                with transaction.atomic():
                    category.save(update_fields=fields + ['updated_at'])
            except IntegrityError:
                raise Conflict('Category name or slug already exists.')

        if parent_id is not _UNSET:
            category = move_category(category.pk, parent_id)

    logger.info(f"Category updated successfully: {category.pk}")
    return category


def remove_category(category_id) -> None:
    """
    Delete a category: children are detached, own threads cascade.
    """
    with transaction.atomic():
        category = _get_category(category_id)

        subtree_ids = descendant_ids(category)
        if subtree_ids:
            ancestor_ids = list(
                CategoryClosure.objects
                .filter(descendant=category)
                .values_list('ancestor_id', flat=True)
            )
            CategoryClosure.objects.filter(
                ancestor_id__in=ancestor_ids,
                descendant_id__in=subtree_ids
            ).delete()

        thread_count = category.threads.count()
        category.delete()

    logger.info(
        f"Category removed successfully: {category_id} "
        f"({len(subtree_ids)} descendants detached, {thread_count} threads deleted)"
    )
