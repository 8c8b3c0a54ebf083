from django.urls import path
from . import api_views

urlpatterns = [
    path("receptions/", api_views.api_create_reception, name="api-create-reception"),
    path("receptions/<int:pk>/", api_views.api_reception_status, name="api-reception-status"),
    path("receptions/<int:pk>/lines/", api_views.api_add_reception_line, name="api-add-reception-line"),
    path("receptions/<int:pk>/lines/<int:line_id>/", api_views.api_reception_line, name="api-reception-line"),
    path("receptions/<int:pk>/changes/", api_views.api_apply_line_changes, name="api-reception-changes"),
    path("receptions/<int:pk>/complete/", api_views.api_complete_reception, name="api-complete-reception"),
    path("receptions/<int:pk>/cancel/", api_views.api_cancel_reception, name="api-cancel-reception"),
    path("purchase-orders/<int:pk>/<slug:action>/", api_views.api_order_transition, name="api-order-transition"),
    path("order-lines/<int:pk>/remaining/", api_views.api_order_line_remaining, name="api-order-line-remaining"),
    path("stock/level/", api_views.api_stock_level, name="api-stock-level"),
    path("supplier-invoices/<int:pk>/match/", api_views.api_three_way_match, name="api-three-way-match"),
]
