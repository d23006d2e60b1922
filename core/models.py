"""
Soft delete support shared by every ledger entity.

Rows are tombstoned (``is_deleted`` + ``deleted_at``) instead of removed.
``objects`` hides tombstoned rows; ``all_objects`` sees everything and is
what historical lookups (sequence numbering, audit) go through.
"""
from django.db import models
from django.utils import timezone


class SoftDeleteQuerySet(models.QuerySet):

    def alive(self):
        return self.filter(is_deleted=False)

    def dead(self):
        return self.filter(is_deleted=True)

    def soft_delete(self) -> int:
        """Tombstone every row in the queryset, returns the number of rows."""
        return self.update(is_deleted=True, deleted_at=timezone.now())


class SoftDeleteManager(models.Manager.from_queryset(SoftDeleteQuerySet)):
    """Default manager: excludes soft-deleted rows."""

    def get_queryset(self):
        return super().get_queryset().filter(is_deleted=False)


class AllObjectsManager(models.Manager.from_queryset(SoftDeleteQuerySet)):
    pass


class SoftDeleteModel(models.Model):
    """
    Abstract base for soft-deletable entities.

    The base manager stays unfiltered so foreign keys from ledger rows keep
    resolving after their item has been deleted.
    """
    is_deleted = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Tombstone marker, deleted rows are hidden from default queries"
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the row was soft-deleted"
    )

    objects = SoftDeleteManager()
    all_objects = AllObjectsManager()

    class Meta:
        abstract = True
        base_manager_name = 'all_objects'

    def soft_delete(self):
        self.is_deleted = True
        self.deleted_at = timezone.now()
        self.save(update_fields=['is_deleted', 'deleted_at', 'updated_at'])
