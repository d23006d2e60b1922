"""
Admin base class for soft-deletable models.

Shows tombstoned rows too, and turns admin deletions into soft deletes.
"""
from django.contrib import admin
from django.utils.text import capfirst


class SoftDeleteAdmin(admin.ModelAdmin):
    readonly_fields = ['is_deleted', 'deleted_at', 'created_at', 'updated_at']
    actions = ['soft_delete_selected']

    def get_queryset(self, request):
        return self.model.all_objects.all()

    def delete_model(self, request, obj):
        obj.soft_delete()

    def get_deleted_objects(self, objs, request):
        """
        Soft delete touches only the selected rows, so the confirmation page
        lists just those. The default collector would report every PROTECT
        reference to them and refuse.
        """
        objs = list(objs)
        opts = self.model._meta
        return (
            [f"{capfirst(opts.verbose_name)}: {obj}" for obj in objs],
            {opts.verbose_name_plural: len(objs)},
            set(),
            [],
        )

    def get_actions(self, request):
        actions = super().get_actions(request)
        actions.pop('delete_selected', None)
        return actions

    @admin.action(description='Soft delete selected rows')
    def soft_delete_selected(self, request, queryset):
        count = queryset.alive().soft_delete()
        self.message_user(request, f"{count} row(s) soft-deleted.")
