"""Candidate pool supplier seam.

The engine never ranks or fetches titles itself. A supplier turns a mode and
a preference mapping into an ordered list of candidates; the engine only
relies on each candidate having an opaque, comparable ``candidate_id``.
"""

from flask import current_app

from swipematch.errors import InvalidRequest


class PoolSupplier:
    """Interface for pool suppliers registered as ``app.extensions['pool_supplier']``."""

    def build(self, mode, preferences):
        raise NotImplementedError


class InlinePoolSupplier(PoolSupplier):
    """Uses the ``candidates`` list carried in the session preferences."""

    def build(self, mode, preferences):
        return list((preferences or {}).get('candidates') or [])


def get_supplier() -> PoolSupplier:
    return current_app.extensions.get('pool_supplier') or InlinePoolSupplier()


def normalize_pool(items):
    """Coerce supplier output to ``[{'candidate_id': str, ...metadata}]``.

    Bare ids become items without metadata. Duplicates keep their first
    position.
    """
    pool = []
    seen = set()
    for item in items or []:
        if isinstance(item, dict):
            raw_id = item.get('candidate_id', item.get('id'))
            metadata = {k: v for k, v in item.items() if k not in ('candidate_id', 'id')}
        elif isinstance(item, (str, int)) and not isinstance(item, bool):
            raw_id, metadata = item, {}
        else:
            raise InvalidRequest('Pool items must be ids or objects with a candidate_id')
        if raw_id is None or raw_id == '':
            raise InvalidRequest('Pool item is missing candidate_id')
        candidate_id = str(raw_id)
        if candidate_id in seen:
            continue
        seen.add(candidate_id)
        entry = {'candidate_id': candidate_id}
        entry.update(metadata)
        pool.append(entry)
    return pool
