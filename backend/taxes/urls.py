from django.urls import path
from .views import (
    tax_list_create, tax_detail, tax_calculate, tax_preview,
    tax_statistics, tax_export, tax_rule_options
)

urlpatterns = [
    # Tax endpoints
    path('taxes/', tax_list_create, name='tax-list-create'),
    path('taxes/<int:pk>/', tax_detail, name='tax-detail'),

    # Calculation endpoints
    path('taxes/calculate/', tax_calculate, name='tax-calculate'),
    path('taxes/preview/', tax_preview, name='tax-preview'),

    # Reporting and editor support
    path('taxes/statistics/', tax_statistics, name='tax-statistics'),
    path('taxes/export/', tax_export, name='tax-export'),
    path('taxes/rule-options/', tax_rule_options, name='tax-rule-options'),
]
