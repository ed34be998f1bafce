"""
School-scoped collections over the records models.

A collection pins two things for every query: the database alias the
school lives in and the school_code filter. Role-scoped views (admins,
teachers, students, parents) add a fixed role filter on top and stamp
it on inserts.

Results are plain dicts so callers never hold model instances bound to
a particular connection.
"""
import logging
from typing import Callable, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from records.models import IdentifierSequence
from tenant.exceptions import DuplicateKey

logger = logging.getLogger(__name__)


def _as_dict(obj) -> dict:
    return {f.attname: getattr(obj, f.attname) for f in obj._meta.concrete_fields}


def _unique_field_names(model) -> set:
    names = {f.name for f in model._meta.concrete_fields if f.unique and not f.primary_key}
    for constraint in model._meta.constraints:
        names.update(getattr(constraint, "fields", ()) or ())
    return names


class TenantCollection:
    """
    Point lookups, scans, inserts and keyed updates for one model
    within one school.
    """

    def __init__(self, model, db_alias: str, school_code: str, scope: Optional[dict] = None, name: str = ""):
        self.model = model
        self.db_alias = db_alias
        self.school_code = school_code
        self.scope = dict(scope or {})
        self.name = name or model._meta.model_name

    def __repr__(self):
        return f"<{type(self).__name__} {self.school_code}/{self.name}@{self.db_alias}>"

    @property
    def _manager(self):
        return self.model._default_manager.db_manager(self.db_alias)

    def _queryset(self):
        return self._manager.filter(school_code=self.school_code, **self.scope)

    def _stamp(self, fields: dict) -> dict:
        return {**fields, **self.scope, "school_code": self.school_code}

    def find_one(self, **lookup) -> Optional[dict]:
        return self._queryset().filter(**lookup).values().first()

    def find(self, order_by=None, **lookup) -> list:
        qs = self._queryset().filter(**lookup)
        if order_by:
            qs = qs.order_by(*([order_by] if isinstance(order_by, str) else order_by))
        return list(qs.values())

    def values(self, field: str, **lookup) -> list:
        return list(self._queryset().filter(**lookup).values_list(field, flat=True))

    def count(self, **lookup) -> int:
        return self._queryset().filter(**lookup).count()

    def insert(self, **fields) -> dict:
        """
        Insert one row. Raises DuplicateKey if a unique constraint fails.
        """
        data = self._stamp(fields)
        try:
            with transaction.atomic(using=self.db_alias):
                obj = self._manager.create(**data)
        except IntegrityError as exc:
            unique = _unique_field_names(self.model)
            key = {k: v for k, v in data.items() if k in unique}
            raise DuplicateKey(self.name, key) from exc
        return _as_dict(obj)

    def update(self, lookup: dict, **fields) -> int:
        """Update rows matching lookup. Returns the number of rows changed."""
        if "updated_at" not in fields:
            fields["updated_at"] = timezone.now()
        return self._queryset().filter(**lookup).update(**fields)

    def upsert(self, lookup: dict, **fields) -> dict:
        with transaction.atomic(using=self.db_alias):
            obj, _ = self._manager.update_or_create(
                defaults=fields,
                **self._stamp(lookup),
            )
        return _as_dict(obj)


class SequenceCollection(TenantCollection):
    """
    Per-school monotonic counters.

    next_value() is an atomic increment-and-fetch: the row is locked with
    select_for_update for the duration of the transaction, so concurrent
    callers on a backend that supports row locks never see the same value.
    """

    def __init__(self, db_alias: str, school_code: str):
        super().__init__(IdentifierSequence, db_alias, school_code, name="sequences")

    def _locked(self, name: str):
        return self._queryset().select_for_update().filter(name=name).first()

    def _create(self, name: str, value: int) -> None:
        try:
            with transaction.atomic(using=self.db_alias):
                self._manager.create(school_code=self.school_code, name=name, last_value=value)
        except IntegrityError:
            # Another caller created it first
            pass

    def current(self, name: str) -> int:
        value = self._queryset().filter(name=name).values_list("last_value", flat=True).first()
        return value or 0

    def next_value(self, name: str, seed: Optional[Callable[[], int]] = None) -> int:
        """
        Allocate the next value for a counter.

        A counter that does not exist yet starts from seed() (the highest
        value already in use), or 0 when no seed is given.
        """
        with transaction.atomic(using=self.db_alias):
            row = self._locked(name)
            if row is None:
                start = int(seed()) if seed is not None else 0
                self._create(name, start)
                row = self._locked(name)
                logger.info(
                    "Created identifier sequence",
                    extra={"school_code": self.school_code, "sequence": name, "start": start},
                )
            self._queryset().filter(pk=row.pk).update(
                last_value=F("last_value") + 1,
                updated_at=timezone.now(),
            )
            return self._queryset().filter(pk=row.pk).values_list("last_value", flat=True).get()

    def reconcile(self, name: str, floor: int) -> None:
        """Move a counter forward to at least floor. Never moves it back."""
        with transaction.atomic(using=self.db_alias):
            if self._locked(name) is None:
                self._create(name, floor)
            self._queryset().filter(name=name, last_value__lt=floor).update(
                last_value=floor,
                updated_at=timezone.now(),
            )
