"""Pure scoring functions.

Nothing in here touches the database or the clock, so re-running them over the
same submission document always yields the same numbers. Finalize relies on it.
"""
import random
from typing import Dict, List, Optional, Sequence

from models.assessment import section_points, total_points

GRADE_BUCKETS = (
    (95, "A+"),
    (90, "A"),
    (85, "B+"),
    (80, "B"),
    (75, "C+"),
    (70, "C"),
    (60, "D"),
)


def mcq_question_score(points: float, is_correct: bool, negative_marking: bool = False,
                       negative_value: float = 0.0) -> float:
    if is_correct:
        return points
    if not negative_marking:
        return 0
    # a wrong answer never costs more than the question is worth
    return -min(points * negative_value, points)


def score_mcq(answers: Dict[str, dict], manifest: List[dict], negative_marking: bool = False,
              negative_value: float = 0.0) -> float:
    total = 0
    for entry in manifest:
        answer = answers.get(entry["question"])
        if answer is None:
            continue
        total += mcq_question_score(entry["points"], answer.get("isCorrect", False),
                                    negative_marking, negative_value)
    return total


def uses_weighted_points(test_cases: List[dict]) -> bool:
    return bool(test_cases) and all(tc.get("points") is not None for tc in test_cases)


def case_points(test_cases: List[dict], passed: Sequence[bool], points: float) -> List[float]:
    """Points earned by each test case of one attempt, scaled to the question's points.

    When every test case declares a weight the passed weights are summed, otherwise
    each case is worth an equal share.
    """
    if not test_cases:
        return []
    if uses_weighted_points(test_cases):
        weights = [float(tc["points"]) for tc in test_cases]
    else:
        weights = [1.0] * len(test_cases)
    total_weight = sum(weights)
    if total_weight <= 0:
        return [0.0] * len(test_cases)
    return [points * weight / total_weight if ok else 0.0 for weight, ok in zip(weights, passed)]


def attempt_score(test_cases: List[dict], passed: Sequence[bool], points: float) -> float:
    return sum(case_points(test_cases, passed, points))


def best_score(attempts: List[dict]) -> float:
    return max((attempt.get("score", 0) for attempt in attempts), default=0)


def question_coding_score(entry: dict) -> float:
    if entry.get("evaluatedScore") is not None:
        return entry["evaluatedScore"]
    return best_score(entry.get("attempts", []))


def score_coding(coding_submissions: Dict[str, dict], manifest: List[dict]) -> float:
    total = 0
    for entry in manifest:
        submission = coding_submissions.get(entry["question"])
        if not submission:
            continue
        total += question_coding_score(submission)
    return total


def percentage(total: float, max_score: float) -> float:
    if not max_score:
        return 0
    return total / max_score * 100


def grade(value: float) -> str:
    for threshold, letter in GRADE_BUCKETS:
        if value >= threshold:
            return letter
    return "F"


def compute_result(submission: dict, assessment: dict) -> dict:
    mcq_score = score_mcq(
        submission.get("mcqAnswers", {}),
        assessment.get("mcqQuestions", []),
        assessment.get("negativeMarking", False),
        assessment.get("negativeMarkingValue", 0),
    )
    coding_score = score_coding(submission.get("codingSubmissions", {}), assessment.get("codingQuestions", []))
    total = mcq_score + coding_score
    max_score = total_points(assessment)
    pct = percentage(total, max_score)
    return {
        "mcqScore": mcq_score,
        "mcqMaxScore": section_points(assessment, "mcqQuestions"),
        "codingScore": coding_score,
        "codingMaxScore": section_points(assessment, "codingQuestions"),
        "totalScore": total,
        "maxScore": max_score,
        "percentage": pct,
        "grade": grade(pct),
        "passed": pct >= assessment.get("passingScore", 40),
    }


def shuffle(sequence, seed=None, rng: Optional[random.Random] = None) -> list:
    """Fisher-Yates shuffle returning a new list. The same seed gives the same order."""
    items = list(sequence)
    rng = rng or random.Random(seed)
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


def shuffle_options(options: List[str], correct_index: Optional[int], seed) -> tuple:
    """Returns (shuffled options, order, shuffled correct index).

    order[k] is the original index of the option shown at position k.
    """
    order = shuffle(range(len(options)), seed)
    shuffled = [options[i] for i in order]
    shuffled_correct = order.index(correct_index) if correct_index is not None else None
    return shuffled, order, shuffled_correct


def option_seed(submission_id: str, question_id: str) -> str:
    return f"{submission_id}:{question_id}:options"


def question_order_seed(submission_id: str, section: str) -> str:
    return f"{submission_id}:{section}:order"
