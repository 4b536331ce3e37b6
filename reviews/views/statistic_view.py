from rest_framework.decorators import api_view
from rest_framework.response import Response

from ..services import StatsService
from ..serializers import StatsSerializer
from .common import server_error

stats_service = StatsService()


@api_view(['GET'])
def stats_overview(request):
    """
    GET /statistic - Статистика назначений ревьюверов
    """
    try:
        stats = stats_service.get_review_stats()
        serializer = StatsSerializer(stats)
        return Response(serializer.data)

    except Exception as e:
        return server_error(e)
