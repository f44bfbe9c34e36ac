# config/urls.py

from django.contrib import admin
from django.urls import path
from django.conf import settings
from django.conf.urls.static import static

urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),
]

# Servir arquivos estáticos em desenvolvimento
if settings.DEBUG:
    urlpatterns += static(settings.STATIC_URL, document_root=settings.STATIC_ROOT)

# Customizar títulos do admin
admin.site.site_header = 'Quadro Sync Admin'
admin.site.site_title = 'Quadro Sync'
admin.site.index_title = 'Administração dos quadros'
