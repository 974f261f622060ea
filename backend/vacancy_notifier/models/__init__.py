from vacancy_notifier.models.subscriber import FilterType, Subscriber, SubscriberFilter
from vacancy_notifier.models.vacancy import CachedVacancy, SeenVacancy

__all__ = [
    "FilterType",
    "Subscriber",
    "SubscriberFilter",
    "CachedVacancy",
    "SeenVacancy",
]
