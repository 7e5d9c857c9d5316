from django.contrib import admin
from .models import Tax, TaxAssignment, TaxRule


class TaxAssignmentInline(admin.TabularInline):
    model = TaxAssignment
    extra = 1


class TaxRuleInline(admin.TabularInline):
    model = TaxRule
    extra = 1


@admin.register(Tax)
class TaxAdmin(admin.ModelAdmin):
    list_display = ['name', 'rate', 'type', 'status', 'product_type', 'updated_at']
    list_filter = ['type', 'status', 'product_type', 'updated_at']
    search_fields = ['name', 'description']
    ordering = ['name']
    inlines = [TaxAssignmentInline, TaxRuleInline]
    readonly_fields = ['created_at', 'updated_at']
