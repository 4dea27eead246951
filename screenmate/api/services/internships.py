"""Static internship catalogue and resume-based opportunity ranking."""

from dataclasses import dataclass

from screenmate.model.models import ResumeProfile

DEFAULT_FIELD = "finance"


@dataclass(frozen=True)
class Opportunity:
    title: str
    company: str
    location: str
    url: str
    description: str
    requirements: tuple[str, ...]
    match_score: int

    def to_dict(self, final_score: int | None = None) -> dict:
        data = {
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "url": self.url,
            "description": self.description,
            "requirements": list(self.requirements),
            "matchScore": self.match_score,
        }
        if final_score is not None:
            data["finalScore"] = final_score
        return data


_ENROLLED = "Currently enrolled in university"

CATALOGUE: dict[str, tuple[Opportunity, ...]] = {
    "finance": (
        Opportunity(
            "Investment Banking Summer Analyst Program",
            "Goldman Sachs",
            "New York, NY",
            "https://www.goldmansachs.com/careers/students/programs/americas/summer-analyst-program.html",
            "Summer analyst program for undergraduate students interested in investment banking.",
            (_ENROLLED, "Strong analytical skills", "Leadership experience"),
            95,
        ),
        Opportunity(
            "Corporate & Investment Banking Summer Analyst",
            "Wells Fargo",
            "San Francisco, CA",
            "https://www.wellsfargo.com/about/careers/students-graduates/internships/",
            "Summer analyst program in corporate and investment banking.",
            (_ENROLLED, "Finance or related major", "Strong quantitative skills"),
            90,
        ),
        Opportunity(
            "Private Equity Summer Analyst",
            "Blackstone",
            "New York, NY",
            "https://www.blackstone.com/careers/students/",
            "Summer analyst program in private equity investments.",
            (_ENROLLED, "Strong analytical skills", "Interest in investments"),
            92,
        ),
    ),
    "consulting": (
        Opportunity(
            "Summer Business Analyst Intern",
            "McKinsey & Company",
            "Various Locations",
            "https://www.mckinsey.com/careers/students/internships",
            "Summer internship in management consulting for undergraduate students.",
            (_ENROLLED, "Any major", "Strong analytical skills", "Leadership experience"),
            92,
        ),
        Opportunity(
            "Summer Associate Intern",
            "Bain & Company",
            "Various Locations",
            "https://www.bain.com/careers/students/",
            "Summer internship in strategy consulting.",
            (_ENROLLED, "Strong problem-solving skills", "Team player"),
            90,
        ),
    ),
    "technology": (
        Opportunity(
            "Software Engineering Internship",
            "Google",
            "Mountain View, CA",
            "https://careers.google.com/students/engineering/",
            "Software engineering internship for students passionate about technology and innovation.",
            (_ENROLLED, "Computer Science or related major", "Programming experience"),
            85,
        ),
        Opportunity(
            "Data Science & Analytics Intern",
            "Microsoft",
            "Redmond, WA",
            "https://careers.microsoft.com/students/us/en/us-internships",
            "Data science internship focusing on analytics and machine learning.",
            (_ENROLLED, "Data analysis skills", "Programming experience"),
            88,
        ),
    ),
    "data": (
        Opportunity(
            "Data Science Summer Intern",
            "Netflix",
            "Los Gatos, CA",
            "https://jobs.netflix.com/students-and-grads",
            "Data science internship in entertainment analytics and recommendation systems.",
            (_ENROLLED, "Data Science, Statistics, or related major", "Python/R skills"),
            88,
        ),
        Opportunity(
            "Quantitative Research Intern",
            "Two Sigma",
            "New York, NY",
            "https://www.twosigma.com/careers/students/",
            "Quantitative research internship in financial technology and data science.",
            (_ENROLLED, "Strong mathematical skills", "Programming experience"),
            93,
        ),
    ),
    "economics": (
        Opportunity(
            "Economic Research Intern",
            "Federal Reserve Bank of New York",
            "New York, NY",
            "https://www.newyorkfed.org/careers",
            "Economic research internship focusing on monetary policy and financial markets.",
            (_ENROLLED, "Economics major", "Research experience"),
            94,
        ),
    ),
}

_MAJOR_BONUS = {
    "finance": (("economics", "math"), 8),
    "consulting": (("economics", "political science"), 8),
    "economics": (("economics",), 10),
}


def _experience_companies(resume: ResumeProfile) -> list[str]:
    return [str(exp).split(" - ")[0].lower() for exp in resume.relevant_experience]


def score(opportunity: Opportunity, field: str, resume: ResumeProfile) -> int:
    """履歴書との一致度でスコアを加算する."""
    total = opportunity.match_score
    company = opportunity.company.lower()

    companies = _experience_companies(resume)
    if any(c and (c in company or company in c) for c in companies):
        total += 15

    skills = [s.lower() for s in resume.skills]
    requirements = [r.lower() for r in opportunity.requirements]
    matched = [s for s in skills if any(s in r or r in s for r in requirements)]
    total += 3 * len(matched)
    if any("python" in s or "java" in s for s in skills):
        total += 5
    if any(k in s for s in skills for k in ("data analysis", "stata", "matlab")):
        total += 5

    bonus = _MAJOR_BONUS.get(field)
    if bonus and resume.major:
        keywords, points = bonus
        if any(k in resume.major.lower() for k in keywords):
            total += points

    if (resume.class_year or "").lower() in ("sophomore", "junior"):
        total += 5
    return total


def best_opportunity(field: str, resume: ResumeProfile) -> tuple[Opportunity, int] | None:
    """分野に応じた最適な募集を返す. 未知の分野はfinanceとして扱う."""
    key = field.lower()
    candidates = CATALOGUE.get(key) or CATALOGUE[DEFAULT_FIELD]
    if not candidates:
        return None
    ranked = sorted(
        ((opp, score(opp, key, resume)) for opp in candidates), key=lambda pair: pair[1], reverse=True
    )
    return ranked[0]
