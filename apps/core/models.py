"""
Shared model base for the auth service.

Every table gets a UUID primary key, creation/update timestamps and a
``deleted_at`` marker. ``delete()`` is a soft delete; rows that must really
disappear go through ``hard_delete()``.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelQuerySet(models.QuerySet):
    """QuerySet aware of the soft delete marker."""

    def delete(self):
        """Mark every row in the queryset as deleted."""
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Remove the rows from the database."""
        return super().delete()


class BaseModelManager(models.Manager.from_queryset(BaseModelQuerySet)):
    """Default manager: soft-deleted rows are invisible."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModel(models.Model):
    """
    Abstract base for all persisted entities.

    Soft-deleted rows stay in the table and can be brought back with
    ``restore()``; they are excluded from ``objects`` but reachable through
    ``objects_with_deleted``.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When the row was created"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the row was last written"
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the row was soft deleted"
    )

    objects = BaseModelManager()
    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        """Soft delete."""
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])

    def hard_delete(self, using=None, keep_parents=False):
        return super().delete(using=using, keep_parents=keep_parents)

    def restore(self):
        self.deleted_at = None
        self.save(update_fields=['deleted_at', 'updated_at'])

    @property
    def is_deleted(self):
        return self.deleted_at is not None
