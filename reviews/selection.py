"""
Алгоритм выбора ревьюверов.

Чистая функция: не ходит в базу и не трогает глобальный random,
источник случайности передается явно.
"""
import random


def select_reviewers(candidates, exclude=(), count=1, rng=None):
    """
    Выбирает до count разных пользователей из candidates, исключая exclude.

    Args:
        candidates: Активные пользователи команды
        exclude: ID пользователей, которых назначать нельзя
        count: Сколько ревьюверов нужно
        rng: Экземпляр random.Random

    Returns:
        list: Выбранные пользователи, пустой список если выбирать не из кого
    """
    excluded = set(exclude)
    seen = set()
    eligible = []
    for candidate in candidates:
        if candidate.id in excluded or candidate.id in seen:
            continue
        seen.add(candidate.id)
        eligible.append(candidate)

    count = max(count, 0)
    if len(eligible) <= count:
        return eligible

    rng = rng or random.Random()
    return rng.sample(eligible, count)
