from datetime import date, timedelta
from typing import Optional, Tuple

def map_grade_to_quality(grade: str) -> int:
    """Map grade to SM-2 quality score (0-5)."""
    mapping = {
        'fail': 0,
        'good': 3,
        'perfect': 4
    }
    return mapping.get(grade, 0)

def grade_from_score(correct: int, total: int) -> str:
    """Grade a review session by its share of correct answers."""
    if total <= 0:
        return 'fail'
    ratio = correct / total
    if ratio < 0.6:
        return 'fail'
    if ratio < 0.95:
        return 'good'
    return 'perfect'

def update_sm2(
    card_interval: int,
    card_ef: float,
    quality: int,
    streak: int,
    base_date: Optional[date] = None,
) -> Tuple[int, float, int, date]:
    """Update SM-2 parameters and compute new due date."""
    if quality < 3:
        new_streak = 0
        new_interval = 1
    else:
        new_streak = streak + 1
        if card_interval == 1:
            new_interval = 6 if quality >= 4 else 1
        else:
            new_interval = max(1, round(card_interval * card_ef))
    new_ef = max(1.3, card_ef + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)))
    anchor = base_date or date.today()
    new_due = anchor + timedelta(days=new_interval)
    return new_interval, new_ef, new_streak, new_due
