"""Mirror a spreadsheet task list as a phase/task tree and sync edits back."""
